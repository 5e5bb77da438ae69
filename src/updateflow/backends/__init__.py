from .file_backend import FileCacheBacking

__all__ = ["FileCacheBacking", "SqlCacheBacking", "RedisCacheBacking"]


def __getattr__(name):
    # sqlalchemy / redis are only imported when those backings are used
    if name == "SqlCacheBacking":
        from .sql_backend import SqlCacheBacking
        return SqlCacheBacking
    if name == "RedisCacheBacking":
        from .redis_backend import RedisCacheBacking
        return RedisCacheBacking
    raise AttributeError(name)
