import json
import os
import stat

from cryptography.fernet import Fernet

import cli.core.config as config


def get_or_create_key() -> bytes:
    """Read or generate the master encryption key."""
    config.ensure_config_dir()
    key_path = config.MASTER_KEY_PATH
    if key_path.exists():
        return key_path.read_bytes().strip()
    key = Fernet.generate_key()
    key_path.write_bytes(key)
    os.chmod(key_path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600
    return key


def _fernet() -> Fernet:
    return Fernet(get_or_create_key())


def encrypt(value: str) -> str:
    """Encrypt a plaintext string, return base64 token."""
    return _fernet().encrypt(value.encode()).decode()


def decrypt(token: str) -> str:
    """Decrypt a base64 token back to plaintext."""
    return _fernet().decrypt(token.encode()).decode()


def encrypt_env_dict(env: dict[str, str]) -> dict[str, str]:
    """Encrypt all values in a dict."""
    f = _fernet()
    return {k: f.encrypt(v.encode()).decode() for k, v in env.items()}


def decrypt_env_dict(env: dict[str, str]) -> dict[str, str]:
    """Decrypt all values in a dict."""
    f = _fernet()
    return {k: f.decrypt(v.encode()).decode() for k, v in env.items()}


def dump_env(env: dict[str, str]) -> str:
    """Serialize an env mapping for the ``projects.env_vars`` column."""
    return json.dumps(encrypt_env_dict(env), sort_keys=True)


def load_env(raw: str | None) -> dict[str, str]:
    """Inverse of :func:`dump_env`. Empty or missing column yields ``{}``."""
    if not raw:
        return {}
    data: dict[str, str] = json.loads(raw)
    return decrypt_env_dict(data)
