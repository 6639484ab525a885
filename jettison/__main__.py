# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import sys

from jettison.cli import main

sys.exit(main())
