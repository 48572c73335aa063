"""
Entry point for python -m knowledgeverse
"""

from knowledgeverse.server import main

if __name__ == '__main__':
    main()
