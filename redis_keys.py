REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room id - pub/sub channel name

# **Messages published on `room:channel:{id}`**
# - `type` = "change" | "system"
# - `table` = rooms | posts | comments | bans (change only)
# - `event` = INSERT | UPDATE | DELETE (change only)
# - `record` = serialized row (change only)
# - `room_id`, `timestamp` = always present
