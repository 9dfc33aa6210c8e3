import os
import sys
import argparse
from pathlib import Path
import redis
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / '.env')

errors = []
warnings = []

parser = argparse.ArgumentParser(description='Validate environment for the AI queue service')
parser.add_argument('--strict', '-s', action='store_true', help='Convert warnings to failures')
parser.add_argument('--skip-connect', action='store_true', help='Do not try to reach Redis')
args = parser.parse_args()
STRICT = args.strict

backend = os.getenv('STORE_BACKEND', 'redis').lower()
if backend not in ('redis', 'memory'):
    errors.append("STORE_BACKEND must be 'redis' or 'memory'")
elif backend == 'memory':
    warnings.append('STORE_BACKEND=memory: queue state is per-process and lost on restart')

if backend == 'redis' and not (os.getenv('REDIS_URL') or os.getenv('REDIS_HOST')):
    errors.append('redis: set REDIS_URL or REDIS_HOST')


def check_int(name, default, lo, hi):
    try:
        val = int(os.getenv(name, str(default)))
    except ValueError:
        errors.append(f'{name} must be an integer')
        return None
    if val < lo or val > hi:
        errors.append(f'{name} must be between {lo} and {hi}')
    return val


redis_port = check_int('REDIS_PORT', 6379, 1, 65535)
check_int('AI_MAX_RETRIES', 3, 0, 20)
timeout_ms = check_int('AI_PROCESSING_TIMEOUT_MS', 300000, 1000, 24 * 3600 * 1000)
check_int('AI_STATUS_TTL_SECONDS', 86400, 60, 30 * 86400)
check_int('CACHE_DEFAULT_TTL', 300, 1, 30 * 86400)

try:
    interval = float(os.getenv('AI_RECOVERY_INTERVAL_SECONDS', '120'))
    if interval < 0:
        errors.append('AI_RECOVERY_INTERVAL_SECONDS must be >= 0')
    elif interval == 0:
        warnings.append('AI_RECOVERY_INTERVAL_SECONDS=0: no background recovery sweep will run')
    elif timeout_ms and interval * 1000 > timeout_ms:
        warnings.append('recovery interval is longer than the processing timeout; stuck requests wait up to both')
except ValueError:
    errors.append('AI_RECOVERY_INTERVAL_SECONDS must be a number')

bypass = os.getenv('RATE_LIMIT_BYPASS', 'false').lower() in ('1', 'true', 'yes')
env = os.getenv('ENVIRONMENT', 'development')
if bypass and env == 'production':
    errors.append('RATE_LIMIT_BYPASS must not be enabled in production')

if os.getenv('LOG_FORMAT', 'json') not in ('json', 'text'):
    warnings.append("LOG_FORMAT should be 'json' or 'text'")

# connect only once the settings themselves are valid
if backend == 'redis' and not args.skip_connect and not errors:
    try:
        if os.getenv('REDIS_URL'):
            r = redis.from_url(os.getenv('REDIS_URL'), socket_timeout=3)
        else:
            r = redis.Redis(host=os.getenv('REDIS_HOST'), port=redis_port, password=os.getenv('REDIS_PASSWORD') or None, socket_timeout=3)
        if r.ping():
            print('Redis: OK')
    except (redis.RedisError, ValueError) as e:
        errors.append(f'Redis check failed: {e}')

if errors:
    print('\nENV validation failed:')
    for e in errors:
        print(' -', e)
    sys.exit(1)

if warnings:
    print('\nWarnings:')
    for w in warnings:
        print(' -', w)
    if STRICT:
        print('\nStrict mode enabled: treating warnings as errors')
        sys.exit(1)

print('\nAll critical validations passed')
sys.exit(0)
