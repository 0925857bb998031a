import sys

from proofbuild.proofbuild_cli import main

sys.exit(main())
