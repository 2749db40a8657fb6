class OptOutError(Exception):
    pass
