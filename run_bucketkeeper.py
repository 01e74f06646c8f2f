"""Wrapper entry point for spark-submit.

Usage:
    spark-submit \\
        --master yarn \\
        --deploy-mode client \\
        --archives bucketkeeper_env.tar.gz#bucketkeeper_env \\
        --conf spark.pyspark.python=./bucketkeeper_env/bin/python \\
        run_bucketkeeper.py compact --executor spark --catalog mycatalog:build --table mydb.events
"""

from bucketkeeper.cli import main

if __name__ == "__main__":
    main()
