# backend/wsgi.py
from posfleet import create_app

app = create_app()
