from rest_framework.throttling import AnonRateThrottle, UserRateThrottle


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


class PaymentWriteThrottle(UserRateThrottle):
    scope = 'payment_write'
