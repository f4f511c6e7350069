import logging
from datetime import datetime
import os


class TradingLogger:
    def __init__(self,
                 name: str = "copy_trader",
                 log_dir: str = "data/logs",
                 console_output: bool = True,
                 level: str = "INFO"):
        self.log_dir = log_dir
        os.makedirs(log_dir, exist_ok=True)

        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        # Re-instantiating must not stack duplicate handlers on the named logger
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self._setup_handlers(console_output, level)

    def _setup_handlers(self, console_output: bool, level: str):
        if console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, str(level).upper(), logging.INFO))
            console_format = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
            console_handler.setFormatter(console_format)
            self.logger.addHandler(console_handler)

        # File handler (always enabled, full debug detail)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        file_handler = logging.FileHandler(
            os.path.join(self.log_dir, f'copy_trader_{timestamp}.log')
        )
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        file_handler.setFormatter(file_format)
        self.logger.addHandler(file_handler)
        self.log_file = file_handler.baseFilename

    def child(self, suffix: str) -> logging.Logger:
        """Named sub-logger that shares this logger's handlers"""
        return self.logger.getChild(suffix)

    def critical(self, message: str, **kwargs) -> None:
        self.logger.critical(message, **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log error message; pass exc_info=True to include the traceback"""
        self.logger.error(message, **kwargs)
