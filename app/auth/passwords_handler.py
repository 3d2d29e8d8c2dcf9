import asyncio

import bcrypt


async def hash_password_async(password: str, rounds: int = 12) -> str:
    # bcrypt is CPU bound; keep it off the event loop
    loop = asyncio.get_running_loop()
    salt = await loop.run_in_executor(None, bcrypt.gensalt, rounds)
    hashed_password = await loop.run_in_executor(
        None, bcrypt.hashpw, password.encode('utf-8'), salt
    )
    return hashed_password.decode('utf-8')


async def verify_password_async(password: str, hashed_password: str) -> bool:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, bcrypt.checkpw, password.encode('utf-8'), hashed_password.encode('utf-8')
    )
