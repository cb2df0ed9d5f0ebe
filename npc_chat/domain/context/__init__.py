# Conversation context for a single NPC

# +---------------------+
# |   Message Store     |   (Ordered, per NPC, owned by the client)
# |---------------------|
# | System prompt @ 0   |
# | user / assistant    |
# |   turns in order    |
# +---------------------+
#
# +---------------------+
# |   Turn Guard        |   (The NOW of the conversation)
# |---------------------|
# | ready gate          |
# | busy flag / lock    |
# +---------------------+
#
#    \    /
#     \  /
#      \/
# +------------------------------+
# |     Request context          |   (Assembled per turn)
# |------------------------------|
# | full message list, or        |
# | flattened "Role: text" lines |
# | + system prompt on the side  |
# +------------------------------+
#         |
#         v
#   [ChatTransport] -> normalizer -> store
