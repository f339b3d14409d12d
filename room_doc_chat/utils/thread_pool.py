import asyncio
from concurrent.futures import ThreadPoolExecutor

IO_POOL_VAL = ThreadPoolExecutor(max_workers=8)


def run_sync(func, *args, **kwargs):
    """
    Run blocking code off the current event loop:
    - FAISS index load / save / add
    - document loaders (pypdf, docx2txt)
    - upload writes to disk
    """
    loop = asyncio.get_running_loop()
    return loop.run_in_executor(IO_POOL_VAL, lambda: func(*args, **kwargs))
