# backend/main.py
import os

from dotenv import find_dotenv, load_dotenv

# 必须在插件读取环境变量之前加载 .env
load_dotenv(find_dotenv(usecwd=True))

from backend.app import create_app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "backend.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
