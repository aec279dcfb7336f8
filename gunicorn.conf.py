import os

# Start with: gunicorn -c gunicorn.conf.py "app:create_app()"

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', 5001)}"
backlog = 2048

# Worker processes; ceremony state is shared through DATABASE_URL
workers = int(os.environ.get('WEB_CONCURRENCY', 4))
worker_class = "gthread"
threads = int(os.environ.get('GUNICORN_THREADS', 4))
timeout = 30
keepalive = 2

# Restart workers after this many requests, to help prevent memory leaks
max_requests = 1000
max_requests_jitter = 50

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

# Process naming
proc_name = 'passgate'

# Server mechanics
preload_app = False
daemon = False
