import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

PLAIN_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'msg': record.getMessage(),
            'logger': record.name,
        }
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str = 'INFO', fmt: str = 'plain', log_dir: Optional[str] = None) -> logging.Logger:
    """Configure root logging: stdout always, a log file when log_dir is writable."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            handlers.append(logging.FileHandler(os.path.join(log_dir, 'swarm_updater.log')))
        except OSError as e:
            print(f"Log directory {log_dir} not usable, logging to stdout only: {e}", file=sys.stderr)

    formatter = JSONFormatter() if (fmt or '').lower() == 'json' else logging.Formatter(PLAIN_FORMAT)
    for h in handlers:
        h.setFormatter(formatter)
    logging.basicConfig(
        level=getattr(logging, (level or 'INFO').upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )
    return logging.getLogger('swarm_updater')
