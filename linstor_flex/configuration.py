import socket

from plumbum import local
from plumbum.typed_env import TypedEnv

from easypy.tokens import Token, LINSTOR, DRBDMANAGE

from .flex_types import DEFAULT_STORAGE_POOL, DEFAULT_DISKLESS_STORAGE_POOL


class Config(TypedEnv):
    class Path(TypedEnv.Str):
        convert = staticmethod(local.path)

    plugin_name, plugin_version = (
        local.path(__file__).dirname["version.info"].read().strip().split()
    )

    _backend = TypedEnv.Str("LINSTOR_FLEX_BACKEND", default="linstor")
    controllers = TypedEnv.Str("LINSTOR_FLEX_CONTROLLERS", default="")
    linstor_bin = TypedEnv.Str("LINSTOR_FLEX_LINSTOR_BIN", default="linstor")
    drbdmanage_bin = TypedEnv.Str("LINSTOR_FLEX_DRBDMANAGE_BIN", default="drbdmanage")
    node_name = TypedEnv.Str("LINSTOR_FLEX_NODE_NAME", default=socket.gethostname())

    device_prefix = TypedEnv.Str("LINSTOR_FLEX_DEVICE_PREFIX", default="/dev/drbd")
    storage_pool = TypedEnv.Str("LINSTOR_FLEX_STORAGE_POOL", default=DEFAULT_STORAGE_POOL)
    diskless_storage_pool = TypedEnv.Str(
        "LINSTOR_FLEX_DISKLESS_STORAGE_POOL", default=DEFAULT_DISKLESS_STORAGE_POOL
    )

    # Convergence timing, expressed as attempts x retry_interval
    assign_retries = TypedEnv.Int("LINSTOR_FLEX_ASSIGN_RETRIES", default=5)
    unassign_retries = TypedEnv.Int("LINSTOR_FLEX_UNASSIGN_RETRIES", default=3)
    device_retries = TypedEnv.Int("LINSTOR_FLEX_DEVICE_RETRIES", default=4)
    mount_device_retries = TypedEnv.Int("LINSTOR_FLEX_MOUNT_DEVICE_RETRIES", default=3)
    attached_retries = TypedEnv.Int("LINSTOR_FLEX_ATTACHED_RETRIES", default=4)
    retry_interval = TypedEnv.Float("LINSTOR_FLEX_RETRY_INTERVAL", default=2.0)

    promote = TypedEnv.Bool("LINSTOR_FLEX_PROMOTE", default=False)
    promote_delay = TypedEnv.Float("LINSTOR_FLEX_PROMOTE_DELAY", default=0.2)

    default_fs_type = TypedEnv.Str("LINSTOR_FLEX_DEFAULT_FS_TYPE", default="ext4")
    _mount_options = TypedEnv.Str("LINSTOR_FLEX_MOUNT_OPTIONS", default="defaults")

    log_level = TypedEnv.Str("LINSTOR_FLEX_LOG_LEVEL", default="info")
    log_file = Path("LINSTOR_FLEX_LOG_FILE", default=local.path("/tmp/linstor_flex"))

    @property
    def backend(self):
        backend = Token(self._backend.upper())
        assert backend in {LINSTOR, DRBDMANAGE}, f"invalid backend: {backend}"
        return backend

    @property
    def mount_options(self):
        s = self._mount_options.strip()
        return [p for p in s.split(",") if p]
