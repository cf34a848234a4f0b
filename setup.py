from setuptools import setup, find_packages


setup(
    name="perpflow",
    version="0.1.0",
    description="Perpetual futures strategy backtester with conservative costs and result validation",
    author="Andrea Ferrante",
    author_email="nonicknamethankyou@gmail.com",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Financial and Insurance Industry",
        "Topic :: Office/Business :: Financial :: Investment",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3 :: Only",
    ],
    keywords="backtesting, perpetual futures, funding rate, crypto",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.10, <4",
    install_requires=["pandas", "numpy", "polars", "tqdm", "loguru"],
    extras_require={"test": ["pytest"]},
)
