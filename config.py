import os

# environment-driven defaults; the command line overrides these

DNS_TIMEOUT = float(os.environ.get('DOMAIN_PROOF_DNS_TIMEOUT', '4'))

KEY_CACHE_TTL = float(os.environ.get('DOMAIN_PROOF_KEY_CACHE_TTL', '300'))
KEY_CACHE_SIZE = int(os.environ.get('DOMAIN_PROOF_KEY_CACHE_SIZE', '256'))

# 30 minutes
SESSION_TTL = float(os.environ.get('DOMAIN_PROOF_SESSION_TTL', '1800'))

DATA_DIR = os.environ.get('DOMAIN_PROOF_DATA_DIR', '.data')
SESSIONS_FILE = os.path.join(DATA_DIR, 'sessions.json')
COMMITMENTS_FILE = os.path.join(DATA_DIR, 'commitments.json')
