"""
Firebase Admin SDK bootstrap

Lazily initializes the default Firebase app so importing the package never
requires credentials. Both the Firestore store and token verification go
through get_firebase_app().
"""

import os

from config import settings
from utils.logger import logger

_firebase_app = None


def get_firebase_app():
    """Lazy initialization of Firebase Admin SDK"""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    import firebase_admin
    from firebase_admin import credentials

    # Check if already initialized
    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    cred_path = settings.GOOGLE_APPLICATION_CREDENTIALS

    if cred_path and os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
        logger.info(f"Initializing Firebase with service account {cred_path}")
    else:
        # Application default credentials (GCP environments, emulator)
        cred = credentials.ApplicationDefault()
        logger.info("Initializing Firebase with application default credentials")

    _firebase_app = firebase_admin.initialize_app(cred, options)
    return _firebase_app
