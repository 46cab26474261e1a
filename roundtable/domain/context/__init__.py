# This module assembles what an agent sees on its turn

# +---------------------+
# |   Long-term memory  |   (Process-wide, persisted)
# |---------------------|
# | Insight entries     |
# | Session summaries   |
# +---------------------+

# +---------------------+
# |   Session           |   (Per conversation, in memory)
# |---------------------|
# | Topic               |
# | Message log         |
# | Search context      |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |         Turn prompt          |
# |------------------------------|
# | Topic + search context       |
# | Ranked memories, summaries   |
# | Topics already discussed     |
# | Last N messages              |
# | Non-repetition instructions  |
# +------------------------------+
#         |
#         v
#   [generation backend] -> repetition guard -> commit
