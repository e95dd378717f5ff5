# Exception hierarchy shared by the store, the transports and the synchronizer. Callers that only care about
# "did it persist" catch MtttError; the subclasses decide how a failure is reported.
class MtttError(Exception):
    pass


# Malformed, oversized, empty or duplicate input. Always raised before anything is mutated.
class ValidationError(MtttError):
    pass


# The store could not read or durably write a document (I/O error, lock timeout, corrupt file).
class PersistenceError(MtttError):
    pass


# The request/response round trip itself failed (server down, timeout, garbage reply).
class TransportError(MtttError):
    pass
