""" Registry of the functions that answer requests, keyed by queue and
    event name.
"""

import threading


class HandlerRegistry:
    """ Maps a (queue, event) pair to the callable that answers it. The
        same event name registered under two queues yields two independent
        entries. Registering a key again replaces the previous handler.
    """

    def __init__(self):
        self._handlers = dict()
        self._lock = threading.Lock()


    def __contains__(self, key):
        with self._lock:
            return key in self._handlers


    def __len__(self):
        with self._lock:
            return len(self._handlers)


    def register(self, queue, event, handler):

        if not callable(handler):
            raise TypeError('handler must be callable, not ' + type(handler).__name__)

        with self._lock:
            self._handlers[(queue, event)] = handler


    def lookup(self, queue, event):
        """ Return the handler for *event* on *queue*, or None if there
            isn't one. A missing handler is routine, not an error.
        """

        with self._lock:
            return self._handlers.get((queue, event))


# end of class HandlerRegistry


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
