# backend/wsgi.py
from teasupply import create_app

app = create_app()
