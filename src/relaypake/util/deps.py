from __future__ import annotations

def check_dependencies() -> tuple[bool, list[str]]:
    missing = []
    for mod, pipname in [
        ("spake2", "spake2"),
        ("cryptography", "cryptography"),
        ("structlog", "structlog"),
        ("pydantic", "pydantic"),
        ("argon2", "argon2-cffi"),
        ("requests", "requests"),
        ("jwt", "PyJWT"),
        ("nacl", "PyNaCl"),
        ("dotenv", "python-dotenv"),
    ]:
        try:
            __import__(mod)
        except ImportError:
            missing.append(pipname)
    return (len(missing) == 0, missing)
