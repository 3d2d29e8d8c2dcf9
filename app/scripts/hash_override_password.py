"""Prints a bcrypt hash for OVERRIDE_PASSWORD_HASH.

Usage: python scripts/hash_override_password.py <password>
"""
import os
import sys
import asyncio

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth.passwords_handler import hash_password_async


async def main(password: str):
    print(await hash_password_async(password))

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1]))
