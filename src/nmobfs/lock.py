#!/usr/bin/env python3
''' exclusive, non-blocking operation lock '''

import os
import fcntl

from loguru import logger

class LockError(Exception):
    ''' the lock file could not be created or opened '''
    pass

class LockContention(Exception):
    ''' another apply/rotate/remove holds the lock '''
    pass

class ExclusiveLock:
    ''' flock(2) on a lock file, used as a context manager

    Losers fail immediately with LockContention, nobody waits.  The kernel
    drops the lock if the holder dies, so a stale file never blocks.
    '''
    def __init__(self, path: str):
        self.path = path
        self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self):
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise LockError(f'Unable to create lock file {self.path}: {e}') from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise LockContention(f'Another obfuscation process is running (lock {self.path} held)') from e
        except OSError as e:
            os.close(fd)
            raise LockError(f'Unable to lock {self.path}: {e}') from e

        try:
            os.ftruncate(fd, 0)
            os.write(fd, f'{os.getpid()}\n'.encode('ascii'))
        except OSError as e:
            os.close(fd)
            raise LockError(f'Unable to write lock file {self.path}: {e}') from e
        self._fd = fd
        logger.trace(f'Lock acquired: {self.path}')
        return self

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
            pass
        logger.trace(f'Lock released: {self.path}')

    def check(self):
        ''' verify the lock infrastructure is usable, without holding it '''
        self.acquire()
        self.release()

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
