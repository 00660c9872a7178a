"""
Dev entrypoint for the CRM backend:
    uvicorn main:app --reload

Apply migrations first (`alembic upgrade head`); the permission catalog
and default roles are seeded on startup unless SEED_ON_STARTUP=false.
"""

from crm_backend.main import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
