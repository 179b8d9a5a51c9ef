#!/usr/bin/env python3
"""
Application entry point.

    gunicorn -c docker/gunicorn_conf.py 'run:create_app()'   # production
    python run.py                                           # development server
"""
import os
from console_backup import create_app

if __name__ == '__main__':
    app = create_app(os.environ.get('FLASK_ENV', 'development'))
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=app.config['DEBUG'])
