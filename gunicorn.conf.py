# Gunicorn configuration for Heroku/Render deployment

# App factory; each worker process gets its own cache and sweep scheduler
wsgi_app = "app:create_app()"

# Project table fans out dozens of ProWorkflow calls on a cold cache
timeout = 120

# Number of workers
workers = 2

# Fetches run on threads inside each request
threads = 4

# Bind to PORT from environment
import os
bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"
