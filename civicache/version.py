VERSION = (0, 3, 0)


def get_civicache_version():
    return ".".join(map(str, VERSION))
