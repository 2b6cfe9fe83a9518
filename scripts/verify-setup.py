#!/usr/bin/env python3
"""Verify fiabot setup and configuration."""

import subprocess
import sys


def check_environment():
    """Check required settings through the bot's own Settings class."""
    print("🔍 Checking environment configuration...")

    try:
        from fiabot.config import Settings
    except ImportError as e:
        print(f"  ❌ Cannot load settings: {e}")
        return False

    config = Settings()
    missing = config.missing_required()

    if missing:
        print(f"  ❌ Missing required: {', '.join(missing)}")
        print("     (Use --dry-run to try the bot without credentials)")
        return False

    print("  ✅ All required settings are present")
    if not config.is_production():
        print(f"  ⚠️  ENVIRONMENT is '{config.environment}'")
    return True


def check_dependencies():
    """Check that required packages are installed."""
    print("\n📦 Checking dependencies...")

    # distribution name -> import name
    required_packages = {
        "requests": "requests",
        "beautifulsoup4": "bs4",
        "pytz": "pytz",
        "psycopg2-binary": "psycopg2",
        "pydantic-settings": "pydantic_settings",
        "click": "click",
        "rich": "rich",
        "flask": "flask",
        "werkzeug": "werkzeug",
        "google-genai": "google.genai",
        "pymupdf": "pymupdf",
    }

    missing = []

    for package, module in required_packages.items():
        try:
            __import__(module)
            print(f"  ✅ {package}")
        except ImportError:
            missing.append(package)
            print(f"  ❌ {package}")

    if missing:
        print(f"\n  Install missing packages: pip install {' '.join(missing)}")
        return False

    return True


def check_bot_modules():
    """Check that bot modules can be imported."""
    print("\n🤖 Checking bot modules...")

    modules = [
        "fiabot.config",
        "fiabot.scraper",
        "fiabot.storage",
        "fiabot.processor",
        "fiabot.publishers.threads",
        "fiabot.run",
    ]

    missing = []

    for module in modules:
        try:
            __import__(module)
            print(f"  ✅ {module}")
        except ImportError as e:
            missing.append(module)
            print(f"  ❌ {module}: {e}")

    if missing:
        print("\n  Some bot modules failed to import. Check dependencies.")
        return False

    return True


def test_cli_command():
    """Test that the CLI command is available."""
    print("\n💻 Testing CLI command...")

    try:
        result = subprocess.run(
            ["fiabot", "--help"], capture_output=True, text=True, timeout=10
        )
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        print(f"  ❌ CLI command not available: {e}")
        return False

    if result.returncode == 0:
        print("  ✅ CLI command works")
        return True

    print(f"  ❌ CLI command failed: {result.stderr}")
    return False


def main():
    """Run all verification checks."""
    print("🔍 fiabot Setup Verification\n" + "=" * 40)

    checks = [
        ("Environment Configuration", check_environment),
        ("Dependencies", check_dependencies),
        ("Bot Modules", check_bot_modules),
        ("CLI Command", test_cli_command),
    ]

    passed = 0
    total = len(checks)

    for _name, check_func in checks:
        print(f"\n{'=' * 40}")
        if check_func():
            passed += 1

    print(f"\n{'=' * 40}")
    print(f"📊 Summary: {passed}/{total} checks passed")

    if passed == total:
        print("🎉 All checks passed! Try `fiabot --mode once --dry-run` next.")
        return True

    print(f"❌ {total - passed} checks failed. Please fix the issues above.")
    return False


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
