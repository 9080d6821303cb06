# backend/wsgi.py
from weighbridge import create_app

app = create_app()
