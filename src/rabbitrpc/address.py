""" Reply addresses. A sender binding needs a private queue to receive its
    replies on; the name is the bound queue's name plus a random token, so
    two independent senders on the same logical queue never share one.
    The token only has to avoid collisions, it is not a secret.
"""

import uuid


def random_token():
    return uuid.uuid4().hex


def reply_address(queue, token_source=random_token):
    """ Return a reply address for *queue* using one token from
        *token_source*, a zero-argument callable returning a string.
    """

    return '%s_%s' % (queue, token_source())



class ReplyAddressAllocator:
    """ Hands out reply addresses, drawing tokens from *token_source*.
        Inject a deterministic source in tests.
    """

    def __init__(self, token_source=None):

        if token_source is None:
            token_source = random_token

        self.token_source = token_source


    def allocate(self, queue):
        return reply_address(queue, self.token_source)


# end of class ReplyAddressAllocator


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
