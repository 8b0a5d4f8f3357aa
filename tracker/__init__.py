"""On-chain LP minting and NFT ownership tracker."""
