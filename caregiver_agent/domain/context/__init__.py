# This module handles context assembly for a conversation turn

# +-----------------------+
# |   Care store          |   (Persistent, relational)
# |-----------------------|
# | Entity profile        |
# | Activity records      |
# | Measurements          |
# | Conversation turns    |
# +-----------------------+
#
# +-----------------------+
# |   Context cache       |   (Per-category recent activities, TTL)
# |-----------------------|
# | entity:{id}:...       |
# +-----------------------+
#
#    \    /
#     \  /
#      \/
# +--------------------------------+
# |         ContextBundle          |   (Assembled per turn, never stored)
# |--------------------------------|
# | Profile summary                |
# | Recent records (enabled only)  |
# | Exclusion notice               |
# | Growth / guidelines / dosage   |
# |   (only when the question      |
# |    calls for them)             |
# +--------------------------------+
#         |
#         v
#   [model / tool loop]
