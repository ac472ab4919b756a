import os
import tempfile

# Config reads this on first import; keep test runs from writing settings.ini into the tree
os.environ.setdefault('WORKSHOP_CONFIG_DIR', tempfile.mkdtemp(prefix='workshop-config-'))
