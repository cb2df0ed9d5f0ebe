# State = whether the conversation can take a turn right now.

# Ready: the client has been wired to a transport

# Busy: a turn is between its user append and its assistant append (or failure)
