class AptosError(Exception):
    pass


class AptosRateLimitError(AptosError):
    pass


class AptosApiError(AptosError):
    pass
