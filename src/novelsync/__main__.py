from novelsync.cli import main

raise SystemExit(main())
