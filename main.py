# main.py (Root Directory)
import os
import uvicorn

from app import app

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8000)),
        reload=os.environ.get("APP_ENV", "development") == "development"
    )
