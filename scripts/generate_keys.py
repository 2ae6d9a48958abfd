"""
Write an RSA key pair for JWT signing.

Usage: python scripts/generate_keys.py [output_dir]

Then point JWT_PRIVATE_KEY_PATH and JWT_PUBLIC_KEY_PATH at the written files.
"""

import os
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from b2b_starter.core.tokens import generate_signing_keys


def main() -> None:
    out_dir = Path(sys.argv[1] if len(sys.argv) > 1 else "keys")
    out_dir.mkdir(parents=True, exist_ok=True)

    private_path = out_dir / "jwt_private.pem"
    public_path = out_dir / "jwt_public.pem"
    if private_path.exists() or public_path.exists():
        print(f"Refusing to overwrite existing keys in {out_dir}")
        sys.exit(1)

    keys = generate_signing_keys()
    private_path.write_text(keys.private_key_pem)
    os.chmod(private_path, 0o600)
    public_path.write_text(keys.public_key_pem)

    print(f"JWT_PRIVATE_KEY_PATH={private_path.resolve()}")
    print(f"JWT_PUBLIC_KEY_PATH={public_path.resolve()}")


if __name__ == "__main__":
    main()
