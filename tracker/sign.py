import hmac
import hashlib

# The collection server authenticates requests by recomputing this same HMAC. Only the device ID
# and the timestamp are signed, the location payload is not. That's how the server expects it, so
# don't change what goes into the message without changing the server at the same time.

def sign(deviceId, timestamp, secret):
    """
    Compute the request signature: hex HMAC-SHA256 keyed with the API secret over the device ID
    followed directly by the decimal unix timestamp (seconds), no separator.
    """
    message = f"{deviceId}{int(timestamp)}".encode('UTF-8')
    return hmac.new(secret.encode('UTF-8'), message, hashlib.sha256).hexdigest()

def verify(deviceId, timestamp, signature, secret):
    if not isinstance(signature, str):
        return False
    return hmac.compare_digest(sign(deviceId, timestamp, secret).encode(), signature.encode('UTF-8'))
