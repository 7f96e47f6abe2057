from __future__ import annotations

import os

# We use timeouts in two different ways in our tests
#
# 1. To make sure that an exchange times out, we use a short client timeout
#    against a server that is deliberately slower than that.
# 2. To make sure that the test does not hang even if the exchange should
#    succeed, we allow a generous margin on top of the timeout, even more so
#    on CI where tests can be really slow.
SHORT_TIMEOUT = 0.5
TIMEOUT_MARGIN = 1.0
if os.environ.get("CI") or os.environ.get("GITHUB_ACTIONS") == "true":
    TIMEOUT_MARGIN = 2.0