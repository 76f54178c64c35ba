from collections import deque


class FakeTransport:
    """
    Scripted stand-in for RawSocketTransport.

    script: sequence of items returned by successive receive() calls. An item
    is either bytes (a datagram), an exception instance (raised) or a
    callable taking the sent packet bytes and returning bytes, so replies can
    echo whatever the pinger sent. When the script runs dry receive() times
    out.
    """

    def __init__(self, address, script=(), includes_ip_header=False,
                 send_error=None, open_error=None):
        self.address = address
        self.script = deque(script)
        self.includes_ip_header = includes_ip_header
        self.send_error = send_error
        self.open_error = open_error
        self.sent = []
        self.receive_timeouts = []
        self.opened = False
        self.closed = False

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True
        return self

    def close(self):
        self.closed = True

    def send(self, data):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)
        return len(data)

    def receive(self, timeout):
        self.receive_timeouts.append(timeout)
        if not self.script:
            raise TimeoutError("timed out")
        item = self.script.popleft()
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(self.sent[-1] if self.sent else b"")
        return item

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
