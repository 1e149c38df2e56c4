import sys
import subprocess
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def run_command(command, cwd=None):
    try:
        subprocess.check_call(command, cwd=cwd)
    except subprocess.CalledProcessError:
        print(f"❌ Command failed: {' '.join(command)}")
        sys.exit(1)


def check_env_file():
    print("🔍 Checking .env file...")
    if not (BASE_DIR / ".env").exists():
        print("⚠️ .env file not found; using built-in defaults")
        return
    print("✅ .env file found")


def check_database(python_path):
    print("🗄️ Checking database configuration...")

    check_script = """
from meterhub.core.config import settings
print("✅ Database URL configured:", settings.DATABASE_URL)
"""

    subprocess.run([str(python_path), "-c", check_script], check=True, cwd=BASE_DIR)


def apply_migrations(python_path):
    print("🔄 Applying database migrations...")

    if not (BASE_DIR / "alembic.ini").exists():
        print("⚠️ alembic.ini not found; skipping migrations")
        return

    run_command([str(python_path), "-m", "alembic", "upgrade", "head"], cwd=BASE_DIR)
    print("✅ Migrations applied")


def start_app(python_path):
    print("\n🚀 Starting MeterHub...\n")
    print("📊 Dashboard: http://localhost:3000")
    print("📚 API Docs:  http://localhost:3000/docs")
    print("\n⚠️ Press Ctrl+C to stop\n")

    run_command(
        [str(python_path), "main.py"],
        cwd=BASE_DIR
    )


def main():
    check_env_file()

    python_path = sys.executable

    check_database(python_path)
    apply_migrations(python_path)
    start_app(python_path)


if __name__ == "__main__":
    main()
