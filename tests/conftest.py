import os
import tempfile

# fastchat.main builds a default app at import time; keep its database out of the repo.
os.environ.setdefault("FASTCHAT_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="fastchat-"), "default.db"))
