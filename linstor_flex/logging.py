import logging
import logging.handlers
from plumbum.commands.modifiers import PipeToLoggerMixin


@logging.setLoggerClass
class Logger(logging.Logger, PipeToLoggerMixin):
    pass


logger = logging.getLogger("linstor-flex")

FORMAT = "{asctime}|{levelname:7}|{process}|{name:15}| {message}"


def init_logging(level, log_file, syslog_address="/dev/log"):
    # stdout belongs to the caller's protocol, so logs go to syslog or a file
    try:
        handler = logging.handlers.SysLogHandler(address=syslog_address)
        handler.setFormatter(logging.Formatter("linstor-flex: {levelname} {message}", style="{"))
    except OSError:
        handler = logging.FileHandler(log_file, mode="a")
        handler.setFormatter(logging.Formatter(FORMAT, style="{"))

    logging.basicConfig(level=level.upper(), handlers=[handler])
