import hashlib

CHUNK_SIZE = 1024 * 1024


def compute_md5(path: str) -> str:
    """Return the hex MD5 digest of a file, read in 1MiB chunks."""
    digest = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()
