import json
import logging
import os
import re
import threading

from typing import Dict, List

logger = logging.getLogger(__name__)

# registry of public commitments for domains whose ownership has been proven;
# filled by the step that runs after a successful binding

COMMITMENT = re.compile(r'^0x[0-9a-f]{64}$')


class CommitmentRegistry:
    def __init__(self, path: str = None):
        self.path = path
        self._commitments: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        if self.path:
            self._load()

    def add(self, domain: str, commitment: str) -> bool:
        """Record a commitment for domain; False if it was already there."""
        domain = domain.lower()
        commitment = commitment.lower()
        if not COMMITMENT.match(commitment):
            raise ValueError(f'commitment must be 0x followed by 64 hex digits: {commitment!r}')

        with self._lock:
            known = self._commitments.setdefault(domain, [])
            if commitment in known:
                return False
            known.append(commitment)
            self._persist()
        logger.info(f'registered commitment for {domain}')
        return True

    def has(self, domain: str, commitment: str) -> bool:
        return commitment.lower() in self._commitments.get(domain.lower(), [])

    def list(self, domain: str) -> List[str]:
        return list(self._commitments.get(domain.lower(), []))

    def _load(self):
        try:
            with open(self.path, 'r') as fh:
                self._commitments = json.load(fh)
        except FileNotFoundError:
            self._commitments = {}

    def _persist(self):
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w') as fh:
            json.dump(self._commitments, fh, indent=2)
