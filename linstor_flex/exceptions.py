from easypy.exceptions import TException


class BadCall(Exception):
    """The caller invoked the driver with a malformed request"""

    @property
    def message(self):
        return self.args[0]


class InvalidParameter(TException):
    template = "Invalid value for {param!r}: {value!r}"


class ControlPlaneParseError(TException):
    template = "Unexpected output from {command!r}: {output!r}"


class ControlPlaneCommandError(TException):
    template = "Control plane command {command!r} failed: {detail}"


class ResourceNotDefined(TException):
    template = "Resource {resource!r} is not defined in the control plane"


class AssignmentTimeout(TException):
    template = "Resource {resource!r} did not settle on node {node!r} after {attempts} attempts"


class UnassignmentTimeout(TException):
    template = "Resource {resource!r} is still assigned to node {node!r} after {attempts} attempts"


class DevicePathUnavailable(TException):
    template = "No device available for resource {resource!r}: {reason}"


class UnsupportedDeviceNaming(TException):
    template = "{device!r} is not a {prefix}<minor> device"


class FilesystemProbeFailed(TException):
    template = "Unable to probe filesystem on {device}: {detail}"


class FilesystemConflict(TException):
    template = "Device {device!r} already formatted with {found!r}, refusing to overwrite with {requested!r}"


class LogDeviceNotFound(TException):
    template = "External log device {log_device!r} does not exist"


class FormatFailed(TException):
    template = "Couldn't create {fs_type} filesystem on {device}: {detail}"


class PromotionFailed(TException):
    template = "Unable to make resource {resource!r} {role}: {detail}"


class MountFailed(TException):
    template = "Mounting {src} failed"


class AlreadyMounted(TException):
    template = "{target} is already mounted from {found} instead of {device}"


class MountStepFailed(TException):
    template = "Resource {resource!r} at {target}: {step} failed"


class UnmountFailed(TException):
    template = "Unmounting {target} failed: {detail}"


class NotAttached(TException):
    template = "Resource {resource!r} is not attached to node {node!r}"
