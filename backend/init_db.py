"""
Initialize the database and persist the default restriction settings.

Run this script once to set up the database:
    python init_db.py
"""

from app.database import engine, Base, SessionLocal
from app.services.settings_store import IP_RESTRICTION_KEY, SettingsStore


def init_database():
    """Create all database tables"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Database tables created successfully!")


def init_settings():
    """Store the default IP restriction settings unless some already exist"""
    store = SettingsStore(SessionLocal)

    if store.get(IP_RESTRICTION_KEY) is not None:
        print("IP restriction settings already exist.")
        print("Skipping default settings.")
        return

    restriction_settings = store.load_restriction_settings()
    store.save_restriction_settings(restriction_settings)

    print("\n" + "="*50)
    print("Default IP restriction settings stored")
    print("="*50)
    print(f"Max concurrent devices: {restriction_settings.default_max_concurrent_sessions}")
    print(f"Inactive timeout: {restriction_settings.inactive_timeout} min")
    print(f"Auto-blacklist after: {restriction_settings.max_failed_attempts} failures"
          f" in {restriction_settings.failed_attempt_window} min")
    print("="*50)


if __name__ == "__main__":
    print("="*50)
    print("IPGate - Database Initialization")
    print("="*50)

    init_database()
    init_settings()

    print("\nDatabase initialization complete!")
    print("\nYou can now start the server with:")
    print("    uvicorn app.main:app --reload")
