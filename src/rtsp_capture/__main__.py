import sys

from rtsp_capture.cli import main

sys.exit(main())
