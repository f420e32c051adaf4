import sys

from kafka_to_opensearch.main import main

sys.exit(main())
