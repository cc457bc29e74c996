REDIS_CODE_KEY = "codes:{slug}" # room id - hash with code / lastAccessedAt
REDIS_CODE_PATTERN = "codes:*" # SCAN match for every room record

# **Example `codes:{id}` hash fields**
# - `code` = current shared text
# - `lastAccessedAt` = ISO timestamp, absent until the record is created
#   through a join/edit/write; refreshed only while present


def room_id_from_key(key: str) -> str:
    return key.split(":", 1)[1]
